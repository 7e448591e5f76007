from django.dispatch import Signal

# Sent with ``database`` (alias) before a dump stream is started.
pre_db_dump = Signal()
# Sent with ``database`` and ``path`` ("-" for stdout) after a dump was written.
post_db_dump = Signal()
# Sent with ``database`` and ``url`` before a restore.
pre_db_restore = Signal()
# Sent with ``database`` and ``url`` after a successful restore.
post_db_restore = Signal()
