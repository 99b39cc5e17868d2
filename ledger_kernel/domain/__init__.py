"""Pure domain core: value enums, sign convention, allocation, DTOs, clock."""
