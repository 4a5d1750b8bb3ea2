import unittest
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from crowdspark.app import create_app
from crowdspark.tests.helpers import (
    campaign_payload,
    create_campaign,
    register_token,
    reset_backends,
    session,
)


class CampaignApiTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        self.db = reset_backends()
        self.owner = register_token(self.client, "olivia", "olivia@example.com", "campaignOwner")
        self.backer = register_token(self.client, "ben", "ben@example.com")

    def test_create_campaign_initialises_totals(self):
        response = self.client.post(
            "/campaigns", json=campaign_payload(), headers=session(self.owner)
        )
        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["message"], "Campaign created successfully")
        campaign = payload["campaign"]
        self.assertEqual(campaign["title"], "Solar Lamps")
        self.assertEqual(campaign["raisedAmount"], 0)
        self.assertEqual(campaign["goalAmount"], 1000)
        self.assertEqual(campaign["status"], "active")
        self.assertEqual(campaign["supporters"], [])
        self.assertEqual(campaign["owner"]["username"], "olivia")
        self.assertEqual(len(campaign["id"]), 32)

    def test_backer_cannot_create_campaign(self):
        response = self.client.post(
            "/campaigns", json=campaign_payload(), headers=session(self.backer)
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(
            response.json()["message"],
            "Only campaign owners or admins can create campaigns",
        )

    def test_create_requires_session(self):
        response = self.client.post("/campaigns", json=campaign_payload())
        self.assertEqual(response.status_code, 401)

    def test_create_rejects_past_deadline(self):
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        response = self.client.post(
            "/campaigns", json=campaign_payload(deadline=past), headers=session(self.owner)
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Invalid or past deadline")

    def test_create_rejects_unparseable_deadline(self):
        response = self.client.post(
            "/campaigns",
            json=campaign_payload(deadline="next tuesday"),
            headers=session(self.owner),
        )
        self.assertEqual(response.status_code, 400)

    def test_create_requires_fields_and_positive_goal(self):
        payload = campaign_payload()
        del payload["image"]
        missing = self.client.post("/campaigns", json=payload, headers=session(self.owner))
        self.assertEqual(missing.status_code, 400)

        zero_goal = self.client.post(
            "/campaigns", json=campaign_payload(goalAmount=0), headers=session(self.owner)
        )
        self.assertEqual(zero_goal.status_code, 400)

    def test_create_rejects_non_finite_goal(self):
        for goal in ("Infinity", "NaN"):
            response = self.client.post(
                "/campaigns",
                json=campaign_payload(goalAmount=goal),
                headers=session(self.owner),
            )
            self.assertEqual(response.status_code, 400, goal)
        self.assertEqual(self.db.list_campaigns(), [])

    def test_title_unique_per_owner(self):
        create_campaign(self.client, self.owner)
        duplicate = self.client.post(
            "/campaigns", json=campaign_payload(), headers=session(self.owner)
        )
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(
            duplicate.json()["message"], "Campaign with this title already exists"
        )

        other_owner = register_token(self.client, "oscar", "oscar@example.com", "campaignOwner")
        same_title = self.client.post(
            "/campaigns", json=campaign_payload(), headers=session(other_owner)
        )
        self.assertEqual(same_title.status_code, 201)

    def test_list_campaigns_attaches_owner(self):
        create_campaign(self.client, self.owner)
        create_campaign(self.client, self.owner, title="Clean Water")
        response = self.client.get("/campaigns")
        self.assertEqual(response.status_code, 200)
        campaigns = response.json()
        self.assertEqual([c["title"] for c in campaigns], ["Solar Lamps", "Clean Water"])
        self.assertTrue(all(c["owner"]["username"] == "olivia" for c in campaigns))

    def test_fetch_distinguishes_malformed_from_missing(self):
        malformed = self.client.get("/campaigns/not-an-id")
        missing = self.client.get(f"/campaigns/{'0' * 32}")
        self.assertEqual(malformed.status_code, 400)
        self.assertEqual(malformed.json()["message"], "Invalid campaign ID format")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["message"], "Campaign not found")

    def test_fetch_campaign(self):
        campaign = create_campaign(self.client, self.owner)
        response = self.client.get(f"/campaigns/{campaign['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["description"], "Lamps for rural schools")
        self.assertEqual(response.json()["owner"]["username"], "olivia")

    def test_my_campaigns_lists_only_own(self):
        create_campaign(self.client, self.owner)
        other_owner = register_token(self.client, "oscar", "oscar@example.com", "campaignOwner")
        create_campaign(self.client, other_owner, title="Tree Planting")

        response = self.client.get("/my-campaigns", headers=session(self.owner))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [c["title"] for c in response.json()], ["Solar Lamps"]
        )
        self.assertEqual(
            set(response.json()[0]), {"id", "title", "image", "goalAmount", "raisedAmount"}
        )

    def test_campaign_image_upload_url(self):
        response = self.client.post(
            "/uploads/campaign-image",
            json={"filename": "Lamp Photo.PNG", "contentType": "image/png"},
            headers=session(self.owner),
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertIn("op=put", payload["uploadUrl"])
        self.assertTrue(payload["imageUrl"].endswith(".png"))
        self.assertIn("campaigns/", payload["imageUrl"])

    def test_campaign_image_upload_rejects_non_images(self):
        response = self.client.post(
            "/uploads/campaign-image",
            json={"filename": "run.sh", "contentType": "text/x-shellscript"},
            headers=session(self.owner),
        )
        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":
    unittest.main()
