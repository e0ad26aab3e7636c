"""Weather dashboard backend: location registry, snapshot cache and sync engine."""
