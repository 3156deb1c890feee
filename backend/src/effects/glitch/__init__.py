"""Channel-shift glitch algorithms (glitch.* namespace)."""
