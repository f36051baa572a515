"""Access log sinks."""
