"""Seed a small demo catalogue for local development.

Creates interest categories and tags, a handful of events, fundraisers and
organizations with tag relevance scores, a follow and feed preferences, so the feed,
trending and exploration paths have something to work with.

Usage:
    docker compose exec backend python -m scripts.seed_demo_content
"""

from datetime import datetime, timedelta, timezone

from feed_engine.models.base import Base, SyncSessionLocal, sync_engine
from feed_engine.models.content import ContentItem, ContentTag, Tag, TagCategory
from feed_engine.models.user_graph import OrganizationFollow, UserFeedPreference

CATEGORIES = {
    "environment": ("Environment", ["Climate", "Oceans", "Urban Gardening"]),
    "education": ("Education", ["Literacy", "STEM Mentoring"]),
    "community": ("Community", ["Food Security", "Housing", "Senior Care"]),
}

ORGANIZATIONS = [
    {"id": "org-green-coast", "title": "Green Coast Alliance", "lat": 29.76, "lon": -95.37},
    {"id": "org-readers", "title": "Readers Without Borders", "lat": 30.27, "lon": -97.74},
    {"id": "org-harvest", "title": "Neighbourhood Harvest", "lat": 29.42, "lon": -98.49},
]

# (type, id, title, organization, {tag name: relevance}, starts in days or None)
CONTENT = [
    ("event", "beach-cleanup", "Saturday Beach Cleanup", "org-green-coast",
     {"Oceans": 1.0, "Climate": 0.6}, 2),
    ("event", "community-garden-day", "Community Garden Planting Day", "org-harvest",
     {"Urban Gardening": 1.0, "Food Security": 0.5}, 5),
    ("event", "stem-night", "STEM Night for Middle Schoolers", "org-readers",
     {"STEM Mentoring": 1.0}, 10),
    ("fundraiser", "reef-restoration", "Reef Restoration Fund", "org-green-coast",
     {"Oceans": 0.9, "Climate": 0.7}, None),
    ("fundraiser", "books-for-all", "Books for Every Classroom", "org-readers",
     {"Literacy": 1.0}, None),
    ("fundraiser", "winter-pantry", "Winter Pantry Drive", "org-harvest",
     {"Food Security": 1.0, "Housing": 0.3}, None),
]


def seed():
    Base.metadata.create_all(sync_engine)
    db = SyncSessionLocal()
    now = datetime.now(timezone.utc)
    try:
        tags_created = 0
        content_created = 0

        # 1. Categories and tags
        tag_ids = {}
        for slug, (name, tag_names) in CATEGORIES.items():
            category = db.query(TagCategory).filter(TagCategory.slug == slug).first()
            if not category:
                category = TagCategory(name=name, slug=slug)
                db.add(category)
                db.flush()
            for tag_name in tag_names:
                tag = db.query(Tag).filter(Tag.category_id == category.id, Tag.name == tag_name).first()
                if not tag:
                    tag = Tag(category_id=category.id, name=tag_name)
                    db.add(tag)
                    db.flush()
                    tags_created += 1
                tag_ids[tag_name] = tag.id

        # 2. Organizations
        for org in ORGANIZATIONS:
            if db.get(ContentItem, ("organization", org["id"])):
                continue
            db.add(ContentItem(
                content_type="organization",
                content_id=org["id"],
                title=org["title"],
                status="active",
                organization_id=org["id"],
                latitude=org["lat"],
                longitude=org["lon"],
            ))
            content_created += 1

        # 3. Events and fundraisers with their tags
        coords = {org["id"]: (org["lat"], org["lon"]) for org in ORGANIZATIONS}
        for content_type, content_id, title, org_id, tags, starts_in in CONTENT:
            if db.get(ContentItem, (content_type, content_id)):
                print(f"  Skipped: {content_type}:{content_id} already exists")
                continue
            lat, lon = coords[org_id]
            db.add(ContentItem(
                content_type=content_type,
                content_id=content_id,
                title=title,
                description=f"{title}, organised by {org_id}",
                status="published",
                organization_id=org_id,
                starts_at=now + timedelta(days=starts_in) if starts_in is not None else None,
                latitude=lat,
                longitude=lon,
            ))
            for tag_name, relevance in tags.items():
                db.add(ContentTag(
                    tag_id=tag_ids[tag_name],
                    content_type=content_type,
                    content_id=content_id,
                    relevance_score=relevance,
                ))
            content_created += 1
            print(f"  Added: {content_type}:{content_id}")

        # 4. A demo user following one organization, with stated feed preferences
        if not db.query(OrganizationFollow).filter(OrganizationFollow.user_id == "demo-user").first():
            db.add(OrganizationFollow(user_id="demo-user", organization_id="org-green-coast"))
        if not db.get(UserFeedPreference, "demo-user"):
            db.add(UserFeedPreference(
                user_id="demo-user",
                interest_weights={},
                content_type_preferences={"event": 60, "fundraiser": 40},
                feed_algorithm="mixed",
                show_recommended_content=True,
            ))

        db.commit()
        print(f"\nDone: {tags_created} tags created, {content_created} content items created")

    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
