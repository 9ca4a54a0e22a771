"""Run single games and Monte Carlo batches from the command line"""
import os
import sys

import numpy as np

# Set matplotlib backend before pyplot is imported
import matplotlib
if '--show-charts' not in sys.argv:
    matplotlib.use('Agg')
import matplotlib.pyplot as plt

from engine import run_monte_carlo, run_one_simulation
from financials import money
from game_config import Difficulty, Duration
from logging_setup import configure_logging


def compute_detailed_stats(results):
    """Distribution statistics for a list of run results"""
    if not results:
        return {}
    scores = np.array([r['score'] for r in results], dtype=float)
    moics = np.array([r['moic'] for r in results if np.isfinite(r['moic'])], dtype=float)
    irrs = np.array([r['irr'] for r in results if r['irr_status'] == 'valid'], dtype=float)

    def dist(values):
        if len(values) == 0:
            return None
        return {
            'p25': float(np.percentile(values, 25)),
            'median': float(np.percentile(values, 50)),
            'p75': float(np.percentile(values, 75)),
            'mean': float(np.mean(values)),
        }

    grades = {}
    for r in results:
        grades[r['grade']] = grades.get(r['grade'], 0) + 1

    return {
        'n': len(results),
        'bankruptcies': sum(1 for r in results if r['bankrupt']),
        'restructured': sum(1 for r in results if r['has_restructured']),
        'score_stats': dist(scores),
        'moic_stats': dist(moics),
        'irr_stats': dist(irrs),
        'irr_undefined_pct': (1 - len(irrs) / len(results)) * 100,
        'grades': grades,
    }


def show_simulation_results(results, bins=30, save_path=None):
    """Histogram panel for a Monte Carlo batch

    Args:
        results: List of run results
        bins: Number of histogram bins
        save_path: If provided, save to this path instead of showing
    """
    stats = compute_detailed_stats(results)
    if not stats:
        print("No results to display")
        return

    fig = plt.figure(figsize=(15, 9), facecolor='white')
    fig.suptitle(f'Holdco Monte Carlo Results (n={stats["n"]})', fontsize=16, fontweight='bold')

    ax1 = plt.subplot(2, 2, 1)
    ax1.hist([r['score'] for r in results], bins=bins, color='#1f77b4', edgecolor='black')
    ax1.set_title('Score')
    ax1.set_xlabel('Points (of 100)')

    ax2 = plt.subplot(2, 2, 2)
    moics = [r['moic'] for r in results if np.isfinite(r['moic'])]
    ax2.hist(moics, bins=bins, color='#2ca02c', edgecolor='black')
    ax2.set_title('MOIC')
    ax2.set_xlabel('Multiple of invested equity')

    ax3 = plt.subplot(2, 2, 3)
    irrs = [r['irr'] * 100 for r in results if r['irr_status'] == 'valid']
    if irrs:
        ax3.hist(irrs, bins=bins, color='#ff7f0e', edgecolor='black')
    ax3.set_title('IRR (valid runs)')
    ax3.set_xlabel('%')

    ax4 = plt.subplot(2, 2, 4)
    order = ['S', 'A', 'B', 'C', 'D', 'F']
    ax4.bar(order, [stats['grades'].get(g, 0) for g in order], color='#9467bd', edgecolor='black')
    ax4.set_title('Grades')

    plt.tight_layout()
    if save_path:
        plt.savefig(save_path, dpi=120)
        plt.close(fig)
        print(f"Saved chart to {save_path}")
    else:
        plt.show()


def print_single_run(seed, difficulty, duration, dump=False):
    """Play one autopilot game and print what happened"""
    result = run_one_simulation(seed, difficulty, duration)

    print(f"\n{'='*80}")
    print(f"SINGLE RUN (Seed: {seed}, {difficulty.value}, {duration.value})")
    print(f"{'='*80}\n")
    print(f"OUTCOME: {'BANKRUPT' if result['bankrupt'] else 'SURVIVED'}"
          f"{' (restructured)' if result['has_restructured'] else ''}")
    print(f"Score: {result['score']:.1f} ({result['grade']})")
    print(f"Enterprise value: {money(result['enterprise_value'])}")
    print(f"Founder equity: {money(result['founder_equity_value'])} "
          f"({result['founder_ownership']:.0%} ownership)")
    print(f"MOIC: {result['moic']:.2f}x")
    print(f"IRR: {result['irr']*100:.1f}% ({result['irr_status']})")
    print(f"Final cash / debt: {money(result['cash'])} / {money(result['total_debt'])}")
    print(f"Active businesses: {result['active_businesses']}, EBITDA {money(result['total_ebitda'])}")
    print(f"Reason: {result['reason']}")

    if dump:
        print(f"\n{'='*80}")
        print("ROUND HISTORY")
        print(f"{'='*80}")
        for entry in result['history']:
            m = entry.metrics
            print(f"Y{entry.round:>2} {entry.event_title:<28} cash {money(m.cash):>9} "
                  f"EBITDA {money(m.total_ebitda):>9} lev {m.net_debt_to_ebitda:>5.2f}x "
                  f"FCF/sh {m.fcf_per_share:>7.2f} {m.distress_level.value}")
            for action in entry.actions:
                print(f"      - {action}")
            if entry.narrative:
                print(f"      > {entry.narrative}")
    print(f"\n{'='*80}\n")


if __name__ == '__main__':
    import argparse

    parser = argparse.ArgumentParser(description='Run holdco simulations with analytics')
    parser.add_argument('--sims', type=int, default=200, help='Number of Monte Carlo runs (default: 200)')
    parser.add_argument('--first-seed', type=int, default=1, help='First seed of the batch (default: 1)')
    parser.add_argument('--single-run', action='store_true', help='Run a single game with a detailed dump')
    parser.add_argument('--seed', type=int, default=123, help='Seed for single-run mode (default: 123)')
    parser.add_argument('--difficulty', choices=[d.value for d in Difficulty], default=Difficulty.EASY.value)
    parser.add_argument('--duration', choices=[d.value for d in Duration], default=Duration.STANDARD.value)
    parser.add_argument('--dump', action='store_true', help='Print the round-by-round history')
    parser.add_argument('--show-charts', action='store_true', help='Show matplotlib charts (requires GUI)')
    parser.add_argument('--save-plots', action='store_true', help='Save plots to PNG files instead of displaying')
    parser.add_argument('--output-dir', type=str, default='output', help='Directory for saved plots (default: output)')

    args = parser.parse_args()
    configure_logging()
    difficulty = Difficulty(args.difficulty)
    duration = Duration(args.duration)

    if args.single_run:
        print_single_run(args.seed, difficulty, duration, dump=args.dump)
        sys.exit(0)

    if args.save_plots:
        os.makedirs(args.output_dir, exist_ok=True)
        print(f"Plots will be saved to: {os.path.abspath(args.output_dir)}")

    print(f"\nRunning {args.sims} simulations ({difficulty.value}, {duration.value})...")
    batch = run_monte_carlo(args.sims, difficulty, duration, first_seed=args.first_seed)
    stats = compute_detailed_stats(batch['results'])

    print(f"\n{'='*80}")
    print("MONTE CARLO RESULTS")
    print(f"{'='*80}")
    print(f"Total Runs: {stats['n']}")
    print(f"Bankruptcy Rate: {batch['bankruptcy_rate']*100:.1f}%")
    print(f"Restructured: {stats['restructured']}")
    score = stats['score_stats']
    print(f"Score P25/P50/P75: {score['p25']:.1f} / {score['median']:.1f} / {score['p75']:.1f}")
    if stats['moic_stats']:
        print(f"Median MOIC: {stats['moic_stats']['median']:.2f}x")
    if stats['irr_stats']:
        print(f"Median IRR: {stats['irr_stats']['median']*100:.1f}%")
    else:
        print("Median IRR: N/A (no valid IRRs)")
    print(f"IRR undefined %: {stats['irr_undefined_pct']:.1f}%")
    print("Grades: " + ", ".join(f"{g}={stats['grades'].get(g, 0)}" for g in ['S', 'A', 'B', 'C', 'D', 'F']))

    if args.show_charts or args.save_plots:
        save_path = os.path.join(args.output_dir, "monte_carlo_results.png") if args.save_plots else None
        show_simulation_results(batch['results'], save_path=save_path)
