"""Domain services: exam engine, analyzer, registry, pairing and runners."""
