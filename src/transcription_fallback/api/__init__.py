"""HTTP surface: routers, DTOs and exception handlers."""
