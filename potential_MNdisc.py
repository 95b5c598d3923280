import numpy as np
import matplotlib.pyplot as plt

from potential_base import AxisymmetricPotential


def mn_phi_cyl(R, z, M, a, b, G, xp=np):
    """
    Miyamoto–Nagai potential Φ(R,z) = - G M / sqrt(R^2 + (a + sqrt(z^2 + b^2))^2)
    """
    beta = xp.sqrt(z*z + b*b)
    D = xp.sqrt(R*R + (a + beta)**2)
    return -G * M / D

def mn_rho_cyl(R, z, M, a, b):
    """
    Miyamoto–Nagai density ρ(R,z) from the analytic potential–density pair.
    ρ = (b^2 M / 4π) * [ a R^2 + (a + 3β)(a + β)^2 ] / [ β^3 * (R^2 + (a + β)^2)^(5/2) ],
    where β = sqrt(z^2 + b^2).
    """
    R = np.asarray(R, float); z = np.asarray(z, float)
    beta = np.sqrt(z*z + b*b)
    D2 = R*R + (a + beta)**2
    num = a * R*R + (a + 3.0*beta) * (a + beta)**2
    den = (beta**3) * (D2**2.5)
    return (b*b * M / (4.0 * np.pi)) * (num / den)


class MiyamotoNagai(AxisymmetricPotential):
    """Miyamoto–Nagai disc: a flattened, non-Staeckel potential for the Fudge finder."""

    def __init__(self, mass: float = 1.0, a: float = 1.0, b: float = 0.3, G: float = 1.0):
        self.mass = float(mass)
        self.a = float(a)
        self.b = float(b)
        self.G = float(G)
        if not self.mass > 0 or self.a < 0 or not self.b > 0:
            raise ValueError("MiyamotoNagai: need mass > 0, a >= 0, b > 0")

    def _phi(self, R, z, xp):
        return mn_phi_cyl(R, z, self.mass, self.a, self.b, self.G, xp=xp)

    def density(self, R, z):
        return mn_rho_cyl(R, z, self.mass, self.a, self.b)


if __name__ == "__main__":
    from actions_staeckel import estimate_focal_distance

    pot = MiyamotoNagai(mass=1.0, a=3.0, b=0.8)

    # --- focal distance of the locally best-fitting Staeckel potential ---
    R = np.linspace(0.5, 15, 40)
    z = np.linspace(0.2, 5, 25)
    delta = np.array([[estimate_focal_distance(pot, Ri, zi) for Ri in R] for zi in z])

    fig, axs = plt.subplots(1, 2, figsize=(12, 5))
    im0 = axs[0].imshow(delta, origin='lower', extent=[R.min(), R.max(), z.min(), z.max()],
                        aspect='auto', cmap='viridis')
    axs[0].set_title('Miyamoto–Nagai: focal distance Δ(R,z)')
    axs[0].set_xlabel('R'); axs[0].set_ylabel('z')
    plt.colorbar(im0, ax=axs[0], fraction=0.046, pad=0.04)

    Rg, zg = np.meshgrid(R, z)
    im1 = axs[1].imshow(np.log10(pot.density(Rg, zg)), origin='lower',
                        extent=[R.min(), R.max(), z.min(), z.max()], aspect='auto', cmap='magma')
    axs[1].set_title('log10 ρ(R,z)')
    axs[1].set_xlabel('R'); axs[1].set_ylabel('z')
    plt.colorbar(im1, ax=axs[1], fraction=0.046, pad=0.04)
    plt.tight_layout()
    plt.show()
