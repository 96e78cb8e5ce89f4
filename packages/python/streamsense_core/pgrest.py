from postgrest.exceptions import APIError as PostgrestAPIError

from .errors import Conflict, Forbidden

PAGE_SIZE = 1000  # PostgREST default max rows per response


def map_pgrest(e: PostgrestAPIError) -> Exception:
    code = getattr(e, "code", None) or ""
    # 23505 unique_violation, 42501 insufficient_privilege (RLS), 23503 foreign_key_violation
    if code == "23505":
        return Conflict("duplicate")
    if code == "42501":
        return Forbidden("permission denied")
    if code == "23503":
        return Conflict("foreign key violation")
    return e  # let unexpected ones bubble up to 500
