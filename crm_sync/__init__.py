"""CRM sync engine - pulls Teamleader Focus records into the local datastore."""

__version__ = "0.1.0"
