"""Pure job types, cron dialect and schedule evaluation.  ZERO I/O."""
