"""Core configuration, enumerations, errors and tool plumbing."""
