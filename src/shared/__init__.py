# src/shared/__init__.py
"""
Общий код между сервисами трекинга.

Модули:
- models: DTO и Pydantic-модели (позиции, состояние, обогащение)
"""

__all__: list[str] = []
