from .resolver import ResolvedRoute, RouteResolver, select_route

__all__ = ["ResolvedRoute", "RouteResolver", "select_route"]
