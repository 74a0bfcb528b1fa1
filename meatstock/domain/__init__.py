"""Domain models, errors and pure stock calculations."""
