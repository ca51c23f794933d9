"""Rule inference and presets."""
