"""auth/ -- Authentication and authorization package for TenantAuth.

Components: PasswordHasher, TokenService, RateLimiter, the role/permission
model, SessionStore (over AuthStore), AuthGate and the AuthService flows.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
