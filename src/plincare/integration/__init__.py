"""Integrations with the legacy HIS and the downstream FHIR gateway."""
