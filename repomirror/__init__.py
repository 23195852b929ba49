"""RepoMirror: mirrors git repositories into a versioned catalog of zip artifacts."""

__version__ = "0.1.0"
