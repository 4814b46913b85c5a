"""Cross-cutting primitives: errors, logging, SQL dialects and configuration."""
