# serialization decorator
def serialized(func):
    """
    Run a method as one ledger.atomic() block.

    The object needs `ledger`. atomic() holds the ledger's re-entrant lock,
    so every object sharing a ledger is serialized on that one lock and
    nested calls open a nested atomic block.
    """
    from functools import wraps

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        with self.ledger.atomic():
            return func(self, *args, **kwargs)

    return wrapper
