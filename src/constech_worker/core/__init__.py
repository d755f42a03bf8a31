"""Core components: configuration, GitHub access, container runtime and workflow engine."""
