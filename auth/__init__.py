"""auth/ -- Authentication and CRM connection package for LeadBridge.

Layer rule: auth/ imports only stdlib + third-party libraries (and core/ for
type hints of Settings). It does NOT import from api/ or crm/.
api/ and crm/ import from auth/, not the other way around.
"""
