"""Cross-cutting primitives: settings, logging, errors, results, retry policies."""
