class RegistryException(Exception):
    """Base exception for all registry-related errors."""
    pass

class PackageNotFoundError(RegistryException):
    """Raised when a package name is not known to the registry."""
    def __init__(self, name: str = None, registry_url: str = None, package_id: int = None):
        self.name = name
        self.registry_url = registry_url
        self.package_id = package_id
        if name is None:
            message = f"No package with id {package_id} in the registry."
        else:
            message = f"Package '{name}' not found in registry."
        if registry_url:
            message += f" Registry URL: {registry_url}"
        super().__init__(message)

class RepositoryNotFoundError(RegistryException):
    """Raised when GitHub has no repository behind a curated entry."""
    def __init__(self, owner: str, repo: str):
        self.owner = owner
        self.repo = repo
        super().__init__(f"GitHub repository {owner}/{repo} does not exist.")

class MalformedRepositoryUrlError(RegistryException):
    """Raised when a repository URL does not contain an owner and a repository."""
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Invalid GitHub URL: {url}")

class CategoryNotFoundError(RegistryException):
    """Raised when linking a package to a category id that is not seeded."""
    pass

class ManifestNotFoundError(RegistryException):
    """Raised when no Nargo.toml can be located."""
    pass

class ConflictError(RegistryException):
    """Raised when a write would violate a uniqueness rule."""
    pass

class DependencyExistsError(ConflictError):
    """Raised when adding a dependency that the manifest already declares."""
    def __init__(self, name: str, manifest_path=None):
        self.name = name
        self.manifest_path = manifest_path
        where = manifest_path.name if manifest_path is not None else "Nargo.toml"
        super().__init__(f"Dependency '{name}' already exists in {where}")

class TransientError(RegistryException):
    """Raised for network failures and timeouts that may succeed on retry."""
    pass

class RateLimitExceededException(TransientError):
    """Raised when the GitHub REST rate limit is hit."""
    def __init__(self, reset_at: str, message: str = "GitHub API rate limit exceeded."):
        self.reset_at = reset_at
        super().__init__(f"{message} Resets at: {reset_at}")

class RegistryUnavailableError(RegistryException):
    """Raised when the registry could not be reached after every retry."""
    def __init__(self, url: str, attempts: int, cause: Exception = None):
        self.url = url
        self.attempts = attempts
        message = f"Failed to reach registry at {url} after {attempts} attempts"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)

class RegistryRequestError(RegistryException):
    """Raised when the registry answers with an unexpected status or body."""
    pass

class ManifestValidationError(RegistryException):
    """Raised when an edited manifest no longer parses as a TOML document."""
    pass

class DatabaseException(RegistryException):
    """Raised when a database operation fails."""
    pass
