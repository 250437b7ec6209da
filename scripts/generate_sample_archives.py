#!/usr/bin/env python3
"""
Generate small .arc.gz files for trying the job locally.
"""

import argparse
import os
import random

from traitor.worker.archive import write_arc_records

HOSTS = ["example.com", "news.example.org", "blog.example.net", "archive.example.edu"]
SENTENCES = [
    "The traitor was unmasked at dawn.",
    "Nothing to see here, just a quiet page.",
    "Treason and betrayal filled the history books.",
    "A spy story, a traitor and a twist.",
    "",
]


def make_page(rng: random.Random) -> bytes:
    body = " ".join(rng.choice(SENTENCES) for _ in range(rng.randint(0, 6)))
    return (b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\n\r\n"
            + f"<html><body><p>{body}</p></body></html>".encode('utf-8'))


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('--output-dir', default='shared/input')
    parser.add_argument('--files', type=int, default=5)
    parser.add_argument('--records', type=int, default=200)
    parser.add_argument('--seed', type=int, default=13)
    args = parser.parse_args()

    rng = random.Random(args.seed)
    os.makedirs(args.output_dir, exist_ok=True)

    for i in range(args.files):
        records = [
            (f"http://{rng.choice(HOSTS)}/page/{i}/{j}.html", make_page(rng))
            for j in range(args.records)
        ]
        path = os.path.join(args.output_dir, f"sample-{i:03d}.arc.gz")
        write_arc_records(path, records)
        print(f"  ✓ Created: {path} ({len(records)} records)")


if __name__ == '__main__':
    main()
