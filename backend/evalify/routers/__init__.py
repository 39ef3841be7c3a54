from evalify.routers import academics, admin, auth, banks, exam, health, me, quizzes, results, uploads

__all__ = [
    "academics",
    "admin",
    "auth",
    "banks",
    "exam",
    "health",
    "me",
    "quizzes",
    "results",
    "uploads",
]
