"""Quality gates and device crop selection."""
