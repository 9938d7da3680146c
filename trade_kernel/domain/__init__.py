"""Pure domain layer: value objects, collaborator contracts, clock."""
