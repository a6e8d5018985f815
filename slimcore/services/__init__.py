"""Service providers activated from the ``services`` configuration block.

Every provider exposes ``register(app, service_name, settings)`` and places
one object in the registry under ``service_name``.
"""

from . import database, ldap, logger, templates, trace

PROVIDERS = {
    "logger": logger.register,
    "templates": templates.register,
    "trace": trace.register,
    "database": database.register,
    "ldap": ldap.register,
}
