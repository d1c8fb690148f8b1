class ListResponseMixin:
    """Adds ``list_response`` to services that expose a ``list`` method.

    ``limit`` and ``offset`` are always the last two arguments of ``list``.
    """

    @classmethod
    def list_response(cls, db, *args, **kwargs) -> dict:
        items = cls.list(db, *args, **kwargs)
        if args and len(args) >= 2:
            limit, offset = args[-2], args[-1]
        else:
            limit, offset = kwargs.get("limit"), kwargs.get("offset")
        return {"items": items, "count": len(items), "limit": limit, "offset": offset}
