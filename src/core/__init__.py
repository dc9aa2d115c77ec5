"""Core types shared by every layer: data model, stages, errors, protocols."""
