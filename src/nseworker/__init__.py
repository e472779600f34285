"""Process wiring for the NSE data worker: settings, composition root, CLI."""
