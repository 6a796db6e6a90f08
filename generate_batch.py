"""Generate a batch of simple images via the backend API."""
import requests

API = "http://localhost:8000/api"

prompts = [
    {"prompt": "A red apple on a white background", "options": {"aspectRatio": "1:1"}},
    {"prompt": "A golden sunset over the ocean", "options": {"aspectRatio": "16:9"}},
    {"prompt": "A cute cartoon cat wearing a top hat", "options": {"aspectRatio": "3:4"}},
    {"prompt": "A mountain landscape with snow peaks", "options": {"aspectRatio": "3:2"}},
    {"prompt": "A cup of coffee with steam rising", "options": {"aspectRatio": "4:3"}},
    {"prompt": "A colorful hot air balloon in blue sky", "options": {"aspectRatio": "9:16", "model": "flux-kontext-pro"}},
]

print(f"🎨 Generating {len(prompts)} images...\n")

for i, p in enumerate(prompts, 1):
    print(f"[{i}/{len(prompts)}] Generating: {p['prompt']} ({p['options']['aspectRatio']})...")
    try:
        resp = requests.post(f"{API}/images/generate", json=p, timeout=180)
        data = resp.json()
        if resp.ok:
            print(f"  ✅ Created: {data['jobId']} ({data['imageUrl']})")
        else:
            print(f"  ❌ Failed: {resp.status_code} - {data.get('errorCode')}: {data.get('message')}")
    except (requests.RequestException, ValueError) as e:
        print(f"  ❌ Error: {e}")

print("\n🎉 Done! Images are under /uploads.")
