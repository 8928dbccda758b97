"""crm/ -- Authenticated calls to the CRM API on behalf of a connected user."""
