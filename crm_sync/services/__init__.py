"""Service layer - plain async functions over an AsyncSession."""
