"""HTTP composition root: app factory, lifespan, dependencies, middleware."""
