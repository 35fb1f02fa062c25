class LSGStorageError(Exception):
    pass

class StoreUnavailableError(LSGStorageError):
    def __init__(self , message):
        message = f"Store_error  = {message}"
        super().__init__(message)

class CapacityExceededError(LSGStorageError):
    def __init__(self, key, required, available):
        self.key = key
        self.required = required
        self.available = available
        message = f"Store capacity exceeded writing {key}: need {required} bytes, {available} available"
        super().__init__(message)


class QuotaExceededError(LSGStorageError):
    def __init__(self, key, usage, ceiling):
        self.key = key
        self.usage = usage
        self.ceiling = ceiling
        message = f"Cannot save {key}, storage full ({usage}/{ceiling} bytes)"
        super().__init__(message)


class RegistryCorruptError(LSGStorageError):
    def __init__(self , reason):
        self.reason = reason
        message = f"Duplicate registry unreadable: {reason}"
        super().__init__(message)


class DestructiveCleanupRefusedError(LSGStorageError):
    def __init__(self):
        super().__init__("Destructive cleanup requires explicit confirmation")


class InvalidConfigError(LSGStorageError):
    def __init__(self , message):
        message = f"Invalid governor config: {message}"
        super().__init__(message)

class InvalidDuplicateReasonError(LSGStorageError):
    def __init__(self , reason):
        self.reason = reason
        message = f"Invalid Duplicate Reason {reason}"
        super().__init__(message)

class InvalidEvictionTierError(LSGStorageError):
    def __init__(self , tier):
        self.tier = tier
        message = f"Invalid Eviction Tier {tier}"
        super().__init__(message)


class SyncError(Exception):
    pass

class SourceUnavailableError(SyncError):
    def __init__(self , message):
        super().__init__(message)

class SyncInProgressError(SyncError):
    def __init__(self , state):
        self.state = state
        message = f"Sync cycle already running (state={state})"
        super().__init__(message)

class ConnectionPoolError(SyncError):
    def __init__(self , message):
        super().__init__(message)
