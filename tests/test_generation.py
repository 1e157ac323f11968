import unittest

import models
from errors import UpstreamFailure
from helpers import ADMIN_EMAIL, APITestCase, SAMPLE_HTML

FORM = {"personalInfo": {"fullName": "Una User", "email": "una@example.com"}, "experience": []}


class TestGenerateCV(APITestCase):

    def generate(self, headers, **body):
        payload = {"formData": FORM, "template": "modern", "industry": "technology"}
        payload.update(body)
        return self.client.post("/generate-cv", json=payload, headers=headers)

    def test_free_generation_charges_one_token(self):
        headers = self.sign_in("una")
        self.set_user("una", tokens=3)
        response = self.generate(headers)
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(body["html"], SAMPLE_HTML)
        self.assertEqual(body["tokensRemaining"], 2)
        self.assertFalse(body["saved"])
        user = self.fetch_user("una")
        self.assertEqual(user.tokens, 2)
        self.assertEqual(user.total_generations, 1)
        self.assertEqual(self.generator.calls, [(FORM, "modern", "technology")])

    def test_no_tokens_is_402_and_generator_not_called(self):
        headers = self.sign_in("una")
        self.set_user("una", tokens=0)
        response = self.generate(headers)
        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json()["error"], "NO_TOKENS")
        self.assertEqual(self.generator.calls, [])

    def test_upstream_failure_does_not_charge(self):
        headers = self.sign_in("una")
        self.generator.error = UpstreamFailure("CV generation failed")
        response = self.generate(headers)
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["error"], "UPSTREAM_FAILURE")
        self.assertEqual(self.fetch_user("una").tokens, 5)

    def test_pro_generation_is_free_and_can_save(self):
        headers = self.sign_in("boss", ADMIN_EMAIL)
        response = self.generate(headers, save=True, title="Tech CV")
        body = response.json()
        self.assertEqual(body["tokensRemaining"], "unlimited")
        self.assertTrue(body["saved"])
        record = self.db.get(models.CVRecord, body["cvId"])
        self.assertEqual(record.title, "Tech CV")
        self.assertEqual(record.form_data, FORM)
        user = self.fetch_user("boss")
        self.assertEqual(user.tokens, 999999)
        self.assertEqual(user.saved_cvs, 1)

    def test_free_user_save_flag_is_ignored(self):
        headers = self.sign_in("una")
        body = self.generate(headers, save=True).json()
        self.assertFalse(body["saved"])
        self.assertIsNone(body["cvId"])
        self.assertEqual(self.db.query(models.CVRecord).count(), 0)

    def test_form_data_requires_personal_info(self):
        headers = self.sign_in("una")
        response = self.generate(headers, formData={"experience": []})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.fetch_user("una").tokens, 5)


class TestScenarios(APITestCase):

    def test_generate_then_upgrade_then_save(self):
        admin = self.sign_in("root", ADMIN_EMAIL)
        user = self.sign_in("u")
        self.set_user("u", tokens=1)

        generated = self.client.post("/generate-cv", json={"formData": FORM}, headers=user).json()
        self.assertEqual(self.fetch_user("u").tokens, 0)

        denied = self.client.post("/cv", json={"htmlContent": generated["html"]}, headers=user)
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json()["error"], "NOT_PRO")

        request_id = self.submit_upgrade(user).json()["requestId"]
        approved = self.client.post(f"/upgrade-requests/{request_id}", json={"action": "approve"}, headers=admin)
        self.assertEqual(approved.status_code, 200)
        self.assertTrue(self.fetch_user("u").is_pro)

        saved = self.client.post("/cv", json={"htmlContent": generated["html"]}, headers=user)
        self.assertEqual(saved.status_code, 200, saved.text)
        self.assertEqual(self.fetch_user("u").saved_cvs, 1)


if __name__ == "__main__":
    unittest.main()
