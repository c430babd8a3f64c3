"""Auto-Analyze engine: sampling, discovery, parallel labelling, and job state."""
