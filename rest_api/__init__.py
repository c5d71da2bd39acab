"""REST service building and serving the modpack server archive."""
