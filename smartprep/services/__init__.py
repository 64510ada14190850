"""Domain services: question bank, attempts, scoring, notifications, students."""
