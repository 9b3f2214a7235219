"""Configuration layer: TOML, env and CLI settings plus logging setup."""
