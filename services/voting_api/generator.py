#!/usr/bin/env python3
"""
Candidate Generator for the Voting API
Generates synthetic candidates for demos, seeding and load tests
"""

import argparse
import json
import random
from pathlib import Path
from typing import Dict, List, Optional

from tqdm import tqdm

from .entities import Candidate


FIRST_NAMES_MEN = [
    "Andrei", "Alexandru", "Mihai", "Ion", "Gheorghe", "Constantin", "Vasile",
    "Stefan", "Florin", "Adrian", "Cristian", "Dan", "Bogdan", "Radu", "Marius",
]
FIRST_NAMES_WOMEN = [
    "Maria", "Elena", "Ioana", "Ana", "Andreea", "Mihaela", "Cristina",
    "Gabriela", "Alina", "Raluca", "Simona", "Daniela", "Roxana", "Irina", "Laura",
]
LAST_NAMES = [
    "Popescu", "Ionescu", "Popa", "Dumitru", "Stan", "Stoica", "Gheorghe",
    "Rusu", "Munteanu", "Matei", "Constantin", "Serban", "Moldovan", "Lazar",
    "Dinu", "Marin", "Ciobanu", "Florea", "Tudor", "Barbu",
]
PARTIES = ["PNL", "AUR", "USR", "Independent", "Green Party", "PSD"]

LOREM_WORDS = (
    "lorem ipsum dolor sit amet consectetur adipiscing elit sed do eiusmod "
    "tempor incididunt ut labore et dolore magna aliqua enim ad minim veniam "
    "quis nostrud exercitation ullamco laboris nisi aliquip ex ea commodo "
    "consequat duis aute irure in reprehenderit voluptate velit esse cillum "
    "fugiat nulla pariatur excepteur sint occaecat cupidatat non proident "
    "sunt culpa qui officia deserunt mollit anim id est laborum"
).split()

PORTRAIT_URL = "https://randomuser.me/api/portraits/{gender}/{image_id}.jpg"


def generate_name(gender: str, rng: random.Random) -> str:
    """Generate a Romanian full name matching the portrait gender"""
    first_names = FIRST_NAMES_MEN if gender == "men" else FIRST_NAMES_WOMEN
    return f"{rng.choice(first_names)} {rng.choice(LAST_NAMES)}"


def generate_sentence(rng: random.Random, min_words: int = 10, max_words: int = 20) -> str:
    """Generate a lorem ipsum sentence of min_words..max_words words"""
    words = [rng.choice(LOREM_WORDS) for _ in range(rng.randint(min_words, max_words))]
    sentence = " ".join(words)
    return sentence[0].upper() + sentence[1:] + "."


def generate_candidate(rng: Optional[random.Random] = None) -> Dict[str, str]:
    """
    Generate the editable fields of a random candidate

    Returns:
        dict with name, party, description and image_url
    """
    rng = rng or random.Random()
    gender = rng.choice(["men", "women"])
    image_id = rng.randint(1, 99)

    return {
        "name": generate_name(gender, rng),
        "party": rng.choice(PARTIES),
        "description": generate_sentence(rng),
        "image_url": PORTRAIT_URL.format(gender=gender, image_id=image_id),
    }


def generate_candidates(count: int, seed: Optional[int] = None,
                        progress: bool = False) -> List[Candidate]:
    """Generate complete candidate records (fresh ids, zero votes)"""
    rng = random.Random(seed)
    iterator = range(count)
    if progress:
        iterator = tqdm(iterator, desc="Generating candidates", unit="candidate")
    return [Candidate.new(**generate_candidate(rng)) for _ in iterator]


def save_candidates(candidates: List[Candidate], output: Path) -> str:
    """Save candidates to a JSON file in wire format"""
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, 'w') as f:
        json.dump([candidate.to_dict() for candidate in candidates], f, indent=2)
    return str(output)


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Generate synthetic candidates for the Voting API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate 10 candidates
  voting-generate --count 10 --output ./data/candidates.json

  # Reproducible output
  voting-generate --count 10 --seed 42 --output ./data/candidates.json
        """
    )

    parser.add_argument(
        '--count',
        type=int,
        default=10,
        help='Number of candidates to generate (default: 10)'
    )
    parser.add_argument(
        '--output',
        type=str,
        default='./data/candidates.json',
        help='Output JSON file (default: ./data/candidates.json)'
    )
    parser.add_argument(
        '--seed',
        type=int,
        default=None,
        help='Random seed for reproducible output'
    )

    args = parser.parse_args()

    if args.count <= 0:
        parser.error("--count must be positive")

    candidates = generate_candidates(args.count, seed=args.seed, progress=True)
    filename = save_candidates(candidates, Path(args.output))

    parties: Dict[str, int] = {}
    for candidate in candidates:
        parties[candidate.party] = parties.get(candidate.party, 0) + 1

    print("\n" + "="*60)
    print("GENERATION COMPLETE")
    print("="*60)
    print(f"Total candidates generated: {len(candidates):,}")
    for party, count in sorted(parties.items()):
        print(f"  {party:<12} {count:,}")
    print(f"Output: {filename}")
    print("="*60)


if __name__ == "__main__":
    main()
