"""Action policy evaluation and ATO control mappings."""
