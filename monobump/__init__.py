"""monobump: change-file driven versioning for npm monorepos."""
