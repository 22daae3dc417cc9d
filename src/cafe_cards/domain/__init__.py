"""Pure loyalty-card domain: entity, reward arithmetic, payload and history codecs."""
