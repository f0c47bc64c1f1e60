"""Healthcare data mapping, validation and document generation."""
