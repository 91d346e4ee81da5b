"""Package data shipped with vocabulary-federation."""
