class AnalysisError(Exception):
    """Base class for every error raised by the analysis engine"""


class MalformedEventError(AnalysisError):
    def __init__(self, message, index=None, timestamp=None, field=None):
        self.index = index
        self.timestamp = timestamp
        self.field = field

        context = []
        if index is not None:
            context.append(f"index={index}")
        if timestamp is not None:
            context.append(f"timestamp={timestamp}")
        if field is not None:
            context.append(f"field={field}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class RegistryError(AnalysisError):
    """Raised before any event is processed when the module registry is unusable"""


class CyclicDependencyError(RegistryError):
    def __init__(self, cycle):
        self.cycle = list(cycle)
        super().__init__(f"Cyclic module dependency: {' -> '.join(self.cycle)}")


class UnresolvedDependencyError(RegistryError):
    def __init__(self, key, required_by=None):
        self.key = key
        self.required_by = required_by
        if required_by:
            message = f"Module '{required_by}' depends on unregistered module '{key}'"
        else:
            message = f"Unregistered module '{key}'"
        super().__init__(message)


class DuplicateModuleError(RegistryError):
    def __init__(self, key):
        self.key = key
        super().__init__(f"Module '{key}' is registered more than once")


class ModuleHandlerError(AnalysisError):
    def __init__(self, module_key, cause, event=None, stage="event"):
        self.module_key = module_key
        self.cause = cause
        self.stage = stage
        self.index = event.index if event is not None else None
        self.timestamp = event.timestamp if event is not None else None

        message = f"Module '{module_key}' failed during {stage}: {cause!r}"
        if event is not None:
            message += f" (event {event.type.value} index={self.index} timestamp={self.timestamp})"
        super().__init__(message)


class ResultAlreadySealedError(AnalysisError):
    def __init__(self):
        super().__init__("Results have already been collected for this run")
