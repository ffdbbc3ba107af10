"""Village portal exam service: attempt lifecycle, auto-save and timed submission."""
