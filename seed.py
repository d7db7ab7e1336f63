import json
import re
import sys

import requests

from app import app
from models import db, Exercise, Recipe, WorkoutProgram

# ----------------------------
# CONFIG
# ----------------------------
# Usage:
#   python seed.py                   built-in starter catalogue
#   python seed.py catalogue.json    local file
#   python seed.py https://...       remote JSON with the same shape
DEFAULT_CATALOGUE = {
    "exercises": [
        {"name": "Barbell Back Squat", "muscle_groups": "legs,glutes", "equipment": "barbell"},
        {"name": "Bench Press", "muscle_groups": "chest,triceps,shoulders", "equipment": "barbell"},
        {"name": "Deadlift", "muscle_groups": "back,legs,glutes", "equipment": "barbell"},
        {"name": "Overhead Press", "muscle_groups": "shoulders,triceps", "equipment": "barbell"},
        {"name": "Pull-up", "muscle_groups": "back,biceps", "equipment": "bodyweight"},
        {"name": "Dumbbell Row", "muscle_groups": "back,biceps", "equipment": "dumbbell"},
        {"name": "Leg Press", "muscle_groups": "legs", "equipment": "machine"},
    ],
    "programs": [
        {"name": "Push Pull Legs", "difficulty": "intermediate", "type": "PPL", "duration_weeks": 8},
        {"name": "Upper / Lower", "difficulty": "beginner", "type": "upper_lower", "duration_weeks": 6},
        {"name": "Full Body Strength", "difficulty": "beginner", "type": "full_body", "duration_weeks": 4},
    ],
    "recipes": [
        {"name": "Overnight Oats", "servings": 1, "prep_time": 5,
         "calories": 420, "protein": 25, "carbs": 55, "fat": 10, "fiber": 8},
        {"name": "Kip met Rijst", "servings": 2, "prep_time": 10, "cook_time": 20,
         "calories": 560, "protein": 45, "carbs": 65, "fat": 12, "fiber": 3},
    ],
}

MODELS = {
    "exercises": Exercise,
    "programs": WorkoutProgram,
    "recipes": Recipe,
}


# ----------------------------
# Normalize names
# ----------------------------
def normalize_name(text):
    return re.sub(r'\s+', ' ', text.strip())


# ----------------------------
# Load catalogue
# ----------------------------
def load_catalogue(source=None):
    if source is None:
        return DEFAULT_CATALOGUE
    if source.startswith(("http://", "https://")):
        print(f"Downloading catalogue from {source}...")
        response = requests.get(source, timeout=30)
        response.raise_for_status()
        return response.json()
    with open(source, "r", encoding="utf-8") as f:
        return json.load(f)


# ----------------------------
# Insert rows that are not there yet
# ----------------------------
def seed_table(model, rows):
    existing = {normalize_name(name).lower() for (name,) in db.session.query(model.name)}
    columns = set(model.__table__.columns.keys())
    added = 0
    for row in rows:
        name = normalize_name(row.get("name") or "")
        if not name or name.lower() in existing:
            continue
        fields = {k: v for k, v in row.items() if k in columns and k != "id"}
        fields["name"] = name
        db.session.add(model(**fields))
        existing.add(name.lower())
        added += 1
    return added


# ----------------------------
# Main
# ----------------------------
def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    catalogue = load_catalogue(argv[0] if argv else None)
    with app.app_context():
        for key, model in MODELS.items():
            added = seed_table(model, catalogue.get(key, []))
            print(f"{key}: {added} added")
        db.session.commit()


if __name__ == "__main__":
    main()
