import mongomock
from bson import ObjectId
from pymongo.errors import OperationFailure


def course_payload(**overrides):
    data = {
        "title": "Front End Web Development",
        "description": "HTML, CSS and JavaScript",
        "weeks": 8,
        "tuition": 100,
        "minimumSkill": "beginner",
        "scholarshipAvailable": True,
    }
    data.update(overrides)
    return data


def review_payload(**overrides):
    data = {"title": "Learned a ton!", "text": "Great instructors", "rating": 8}
    data.update(overrides)
    return data


def bootcamp_doc(db, bootcamp):
    return db["bootcamp"].find_one({"_id": bootcamp["_id"]})


def test_add_course_updates_average_cost(client, db, make_user, make_bootcamp, auth):
    owner, token = make_user("publisher")
    bootcamp = make_bootcamp(owner)
    url = f"/api/v1/bootcamps/{bootcamp['_id']}/courses"

    res = client.post(url, json=course_payload(tuition=100), headers=auth(token))
    assert res.status_code == 201
    assert res.json()["data"]["bootcamp"] == str(bootcamp["_id"])
    assert res.json()["data"]["user"] == owner["id"]
    client.post(url, json=course_payload(tuition=150), headers=auth(token))

    assert bootcamp_doc(db, bootcamp)["averageCost"] == 130


def test_add_course_checks_bootcamp_and_owner(client, make_user, make_bootcamp, auth):
    owner, _ = make_user("publisher")
    _, stranger = make_user("publisher")
    bootcamp = make_bootcamp(owner)

    missing = ObjectId()
    res = client.post(f"/api/v1/bootcamps/{missing}/courses", json=course_payload(), headers=auth(stranger))
    assert res.status_code == 404
    assert res.json()["error"] == f"No bootcamp with the id of {missing}"

    res = client.post(f"/api/v1/bootcamps/{bootcamp['_id']}/courses", json=course_payload(), headers=auth(stranger))
    assert res.status_code == 403


def test_add_course_validates_skill(client, make_user, make_bootcamp, auth):
    owner, token = make_user("publisher")
    bootcamp = make_bootcamp(owner)
    res = client.post(
        f"/api/v1/bootcamps/{bootcamp['_id']}/courses",
        json=course_payload(minimumSkill="guru"),
        headers=auth(token),
    )
    assert res.status_code == 400
    assert res.json()["error"].startswith("minimumSkill")


def test_update_and_delete_course_recompute(client, db, make_user, make_bootcamp, auth):
    owner, token = make_user("publisher")
    bootcamp = make_bootcamp(owner)
    url = f"/api/v1/bootcamps/{bootcamp['_id']}/courses"
    first = client.post(url, json=course_payload(tuition=100), headers=auth(token)).json()["data"]
    second = client.post(url, json=course_payload(tuition=200), headers=auth(token)).json()["data"]
    assert bootcamp_doc(db, bootcamp)["averageCost"] == 150

    res = client.put(f"/api/v1/courses/{first['id']}", json={"tuition": 400}, headers=auth(token))
    assert res.status_code == 200
    assert res.json()["data"]["tuition"] == 400
    assert bootcamp_doc(db, bootcamp)["averageCost"] == 300

    assert client.delete(f"/api/v1/courses/{first['id']}", headers=auth(token)).status_code == 200
    assert bootcamp_doc(db, bootcamp)["averageCost"] == 200
    assert client.delete(f"/api/v1/courses/{second['id']}", headers=auth(token)).status_code == 200
    assert "averageCost" not in bootcamp_doc(db, bootcamp)


def test_get_course_expands_bootcamp(client, make_user, make_bootcamp, auth):
    owner, token = make_user("publisher")
    bootcamp = make_bootcamp(owner, name="Codemasters")
    course = client.post(
        f"/api/v1/bootcamps/{bootcamp['_id']}/courses", json=course_payload(), headers=auth(token)
    ).json()["data"]

    res = client.get(f"/api/v1/courses/{course['id']}")
    assert res.status_code == 200
    expanded = res.json()["data"]["bootcamp"]
    assert expanded["name"] == "Codemasters"
    assert set(expanded) <= {"id", "name", "description", "email", "website"}


def test_nested_course_listing(client, make_user, make_bootcamp, auth):
    owner, token = make_user("publisher")
    bootcamp = make_bootcamp(owner)
    url = f"/api/v1/bootcamps/{bootcamp['_id']}/courses"
    for tuition in (100, 200, 300):
        client.post(url, json=course_payload(tuition=tuition), headers=auth(token))

    body = client.get(url).json()
    assert body["count"] == 3
    assert len(body["data"]) == 3

    assert client.get("/api/v1/bootcamps/bad-id/courses").status_code == 404


def test_review_lifecycle(client, db, make_user, make_bootcamp, auth):
    owner, _ = make_user("publisher")
    _, alice = make_user("user")
    _, bob = make_user("user")
    bootcamp = make_bootcamp(owner)
    url = f"/api/v1/bootcamps/{bootcamp['_id']}/reviews"

    res = client.post(url, json=review_payload(rating=8), headers=auth(alice))
    assert res.status_code == 201
    review_id = res.json()["data"]["id"]
    client.post(url, json=review_payload(rating=7), headers=auth(bob))
    assert bootcamp_doc(db, bootcamp)["averageRating"] == 7.5

    res = client.put(f"/api/v1/reviews/{review_id}", json={"rating": 2}, headers=auth(bob))
    assert res.status_code == 403
    assert res.json()["error"] == "Not authorized to update this review"

    res = client.put(f"/api/v1/reviews/{review_id}", json={"rating": 10}, headers=auth(alice))
    assert res.status_code == 200
    assert bootcamp_doc(db, bootcamp)["averageRating"] == 8.5

    res = client.delete(f"/api/v1/reviews/{review_id}", headers=auth(bob))
    assert res.status_code == 403
    assert res.json()["error"] == "Not authorized to delete this review"


def test_duplicate_review(client, make_user, make_bootcamp, auth):
    owner, _ = make_user("publisher")
    _, token = make_user("user")
    bootcamp = make_bootcamp(owner)
    url = f"/api/v1/bootcamps/{bootcamp['_id']}/reviews"

    assert client.post(url, json=review_payload(), headers=auth(token)).status_code == 201
    res = client.post(url, json=review_payload(title="Again"), headers=auth(token))
    assert res.status_code == 400
    assert res.json()["error"] == "Duplicate field value entered"


def test_publisher_cannot_review(client, make_user, make_bootcamp, auth):
    owner, token = make_user("publisher")
    bootcamp = make_bootcamp(owner)
    res = client.post(f"/api/v1/bootcamps/{bootcamp['_id']}/reviews", json=review_payload(), headers=auth(token))
    assert res.status_code == 403


def test_review_rating_bounds(client, make_user, make_bootcamp, auth):
    owner, _ = make_user("publisher")
    _, token = make_user("user")
    bootcamp = make_bootcamp(owner)
    res = client.post(
        f"/api/v1/bootcamps/{bootcamp['_id']}/reviews", json=review_payload(rating=11), headers=auth(token)
    )
    assert res.status_code == 400


def test_deleting_last_review_removes_rating(client, db, make_user, make_bootcamp, auth):
    owner, _ = make_user("publisher")
    _, admin = make_user("admin")
    bootcamp = make_bootcamp(owner)
    url = f"/api/v1/bootcamps/{bootcamp['_id']}/reviews"
    tokens = [make_user("user")[1] for _ in range(3)]
    ids = [client.post(url, json=review_payload(rating=r), headers=auth(t)).json()["data"]["id"]
           for r, t in zip((4, 6, 9), tokens)]
    assert bootcamp_doc(db, bootcamp)["averageRating"] == 6.3

    for review_id in ids:
        assert client.delete(f"/api/v1/reviews/{review_id}", headers=auth(admin)).status_code == 200
    assert "averageRating" not in bootcamp_doc(db, bootcamp)


def test_review_listing_and_lookup(client, make_user, make_bootcamp, auth):
    owner, _ = make_user("publisher")
    _, token = make_user("user")
    bootcamp = make_bootcamp(owner, name="Reviewed Camp")
    review = client.post(
        f"/api/v1/bootcamps/{bootcamp['_id']}/reviews", json=review_payload(), headers=auth(token)
    ).json()["data"]

    body = client.get("/api/v1/reviews").json()
    assert body["message"] == "All Reviews retrieved successfully"
    assert body["data"][0]["bootcamp"]["name"] == "Reviewed Camp"
    assert set(body["data"][0]["bootcamp"]) == {"id", "name", "description"}

    body = client.get(f"/api/v1/bootcamps/{bootcamp['_id']}/reviews").json()
    assert body["count"] == 1

    res = client.get(f"/api/v1/reviews/{review['id']}")
    assert res.status_code == 200
    assert res.json()["data"]["bootcamp"]["name"] == "Reviewed Camp"

    assert client.get("/api/v1/reviews/123").status_code == 404
    assert client.get(f"/api/v1/reviews/{ObjectId()}").status_code == 404


def test_writes_succeed_when_recompute_fails(client, db, make_user, make_bootcamp, auth, monkeypatch):
    owner, publisher = make_user("publisher")
    _, reviewer = make_user("user")
    bootcamp = make_bootcamp(owner)

    def broken(self, *args, **kwargs):
        raise OperationFailure("aggregate unavailable")

    monkeypatch.setattr(mongomock.Collection, "aggregate", broken)

    res = client.post(
        f"/api/v1/bootcamps/{bootcamp['_id']}/courses", json=course_payload(tuition=125), headers=auth(publisher)
    )
    assert res.status_code == 201
    res = client.post(
        f"/api/v1/bootcamps/{bootcamp['_id']}/reviews", json=review_payload(), headers=auth(reviewer)
    )
    assert res.status_code == 201

    stored = bootcamp_doc(db, bootcamp)
    assert "averageCost" not in stored
    assert "averageRating" not in stored
    assert db["course"].count_documents({}) == 1
    assert db["review"].count_documents({}) == 1
